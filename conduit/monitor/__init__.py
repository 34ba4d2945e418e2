"""Order status view — read-only projection plus Rich rendering.

Modules
-------
projection
    ``OrderProjection`` reads the store and produces ``OrderSnapshot``
    models, a point-in-time view of one Order and its children.
renderer
    ``OrderRenderer`` turns ``OrderSnapshot`` into Rich renderables.
"""
