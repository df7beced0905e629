"""
saccolink: Signed-request toolkit for the Bitnob payments API.

Signs outbound calls with the x-auth HMAC scheme used by the SACCO wallet
services, verifies them on the receiving side with clock-skew and replay
checks, and ships the probing tools used to map the remote API.
"""

__version__ = "0.3.0"
