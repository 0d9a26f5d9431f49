"""
Saved lists import service.
`src.importer` holds the archive-to-lists pipeline; `src.api` exposes it over HTTP.
"""
