"""
HopTrace - ICMP Network Path Discovery

An event-driven traceroute engine that discovers the forwarding hops
between the local host and a destination by sending ICMP echo probes
with increasing hop-limits and correlating the replies.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

__version__ = "0.1.0"
__author__ = "DNS Science.io"
__copyright__ = "Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company"
