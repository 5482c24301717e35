"""Delivery configuration: environment-driven settings singleton."""

_settings_instance = None


def get_settings():
    """Return the delivery settings (singleton), read from the environment on first use."""
    global _settings_instance
    if _settings_instance is None:
        from delivery.config.settings import DeliverySettings

        _settings_instance = DeliverySettings.from_env()
    return _settings_instance


def reset_settings():
    """Reset the settings singleton (useful for testing)."""
    global _settings_instance
    _settings_instance = None
