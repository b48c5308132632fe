"""Listing Desk - listing tables and AI document import for a real-estate team."""
