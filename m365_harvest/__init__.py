"""
M365 Harvest
============
Rate-limited, paginated harvesting of Defender for Endpoint, Graph-style
and NVD collections, joined against local subnet reference tables and
exported to CSV.
"""

__version__ = "1.0.0"
