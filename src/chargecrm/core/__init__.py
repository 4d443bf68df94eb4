"""Core infrastructure -- durable key-value storage backends."""
