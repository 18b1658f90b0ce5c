"""Core contracts package.

Architectural role:
    Holds the data model and error taxonomy shared by the image, storage and
    API packages. Nothing here performs I/O.

Composition:
    - `types`: generation requests, jobs, poll results, stored images, job states.
    - `errors`: `FluxError` hierarchy and HTTP status mapping.
"""
