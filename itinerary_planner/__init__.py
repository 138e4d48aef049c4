"""
Itinerary Planner
=================

Travel itinerary search and generation: a tiered catalog search scored
against traveler constraints, with new itineraries generated from
bookable activities when the catalog has too few strong matches.

Author: Hybrid Trip Planner Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Hybrid Trip Planner Team"


def get_version():
    """Return the current version of the application"""
    return __version__


def get_info():
    """Return basic information about the application"""
    return {
        "name": "Itinerary Planner",
        "version": __version__,
        "author": __author__,
        "description": "Catalog itinerary search with generation fallback"
    }
