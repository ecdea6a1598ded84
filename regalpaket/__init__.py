"""
Regalpaket: paginated sheet-music container format and service core
"""
__version__ = "1.0.0"
