"""Image persistence package.

Module split:
    - `file_store`: durable raster + JSON metadata files (server side).
    - `http_store`: durable store reached through the HTTP service (client side).
    - `ephemeral_store`: in-process fallback tier with an optional JSON mirror.
    - `router`: two-tier routing, fallback and reconciliation.
"""
