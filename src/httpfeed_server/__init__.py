"""HTTP feed server -- publishes ordered feeds as linked JSON pages.

Endpoints:
- GET /feeds -- list published feeds
- GET /feeds/{name}?offset=<position>&timeout=<ms> -- read a page
- POST /feeds/{name} -- append a put or delete entry
- POST /feeds/{name}/retention -- expire entries before a cutoff
"""
