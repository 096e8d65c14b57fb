"""jobctl - command line client for the plugin job service"""

__version__ = "1.2.0"
