"""Classify street names by the gender of the person they honor, using Wikidata."""

__version__ = "1.0.0"
