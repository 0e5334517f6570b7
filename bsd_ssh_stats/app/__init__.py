"""Long-running services built on the BSD SSH Stats core."""
