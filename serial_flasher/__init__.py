"""Host-side toolkit for the ESP serial bootloader protocol: types, transport interface, command encoding, SIP headers and workflows."""

__version__ = "0.1.0"

__all__ = ["loader_types", "port", "protocol", "sip", "target_info", "workflows"]