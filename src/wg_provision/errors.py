# src/wg_provision/errors.py
from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every failure the provisioner reports."""


class SettingsError(ProvisionError):
    pass


class AllocationError(ProvisionError):
    """Peers directory unreadable, or a peer directory that does not parse."""


class KeyGenerationError(ProvisionError):
    """`wg` missing, exited non-zero, or printed nothing."""


class ConfigWriteError(ProvisionError):
    pass


class EncodingError(ProvisionError):
    """QR rendering failed. The peer itself is still provisioned."""


class ServiceControlError(ProvisionError):
    pass
