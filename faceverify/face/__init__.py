"""Face verification building blocks (sources/liveness/gallery/matcher).

Model libraries are only imported by the concrete sources, so the numerical core
can be used with any landmark/embedding implementation, including test doubles.
"""
