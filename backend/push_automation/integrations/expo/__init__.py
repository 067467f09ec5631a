"""Expo push transport."""

from push_automation.integrations.expo.push_client import (
    DatabaseDeviceTokenProvider,
    DeviceTokenProvider,
    ExpoConfig,
    ExpoPushDispatcher,
    is_expo_push_token,
)

__all__ = [
    "DatabaseDeviceTokenProvider",
    "DeviceTokenProvider",
    "ExpoConfig",
    "ExpoPushDispatcher",
    "is_expo_push_token",
]
