"""
pairing/ — QR pairing payload helpers

Address discovery (LAN interfaces, optional Tailscale probe) and QR code
rendering for the payload the device scans to find and authenticate with
the gateway.
"""

from r1gateway.pairing.network import discover_ips, get_lan_ips, get_tailscale_ip
from r1gateway.pairing.qr import print_qr_ascii, render_qr_data_uri, render_qr_svg

__all__ = [
    "discover_ips",
    "get_lan_ips",
    "get_tailscale_ip",
    "print_qr_ascii",
    "render_qr_data_uri",
    "render_qr_svg",
]
