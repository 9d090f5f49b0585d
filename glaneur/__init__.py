"""
Glaneur - ROM identification & metadata scraper

A Python-based tool to walk ROM directories, identify each ROM by the hash
of its canonical bytes, look it up in one or more metadata sources, fetch
artwork and write an EmulationStation compatible gamelist.xml.
"""

__version__ = "0.3.0"
__author__ = "glaneur contributors"
