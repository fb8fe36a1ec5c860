"""RADIUS authentication gateway.

Decodes Access-Requests, asks a pluggable identity backend, and answers
with signed Access-Accept or Access-Reject packets.
"""

__version__ = "0.1.0"
