"""Geohash cells and great-circle distance."""
