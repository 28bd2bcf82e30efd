"""Wake-on-Connect Minecraft Gateway

A Python service that sits in front of a Minecraft server, answers pings while
the server is down and asks the Pterodactyl panel to start it when players join.
"""

__version__ = "1.0.0"
__author__ = "Wake Proxy"
