"""Transport providers. zyre is imported on demand; it needs the Zyre bindings."""
