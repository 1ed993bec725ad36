"""
Visitor Intelligence Engine
===========================
A four-stage pipeline that turns website visits into scored B2B leads:
  Stage 1: Source Lookups (geo-IP, IP info, RDAP, reverse DNS)
  Stage 2: Classification (hostname and organization patterns)
  Stage 3: Identity Fusion (alias mapping and precedence)
  Stage 4: Lead Scoring (bounded 0-100 score)
"""

__version__ = "1.0.0"
