"""
Catalog configs: one `catalogs/<id>/catalog.yaml` per footprint catalog.
"""
