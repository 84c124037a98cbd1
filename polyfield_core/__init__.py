"""
Polyfield Core Package.

Device protocol and calibration/measurement core for athletics field events:
EDM rangefinder, wind gauge and results scoreboard over serial or TCP.

Package structure:
- io: Transports, per-role workers, connection manager
- proto: Device codecs (EDM, wind dialects, scoreboard frames)
- domain: Circle standards, geometry, calibration engine, wind averaging
- reliability: Dual-read tolerance, bounded retry, durable result cache
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"
__author__ = "Polyfield Team"
