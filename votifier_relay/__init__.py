"""
Votifier relay client.

Delivers Minecraft server-list votes to Votifier-compatible listeners
(legacy Votifier v1 RSA, NuVotifier v2 HMAC and fixed-key RSA servers).
"""

__version__ = "0.1.0"
