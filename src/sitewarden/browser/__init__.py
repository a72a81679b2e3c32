"""Browser resource management, navigation, and human-like input."""
