"""Find WeChat desktop accounts, recover their database keys and decrypt their databases."""

__version__ = "0.1.0"