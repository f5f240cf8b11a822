"""
Face Match Engine

Identity resolution for partner photos attached to relationship records:
- Pluggable recognition backends (cloud services, custom HTTP, local fallback)
- Similarity-ranked search over registered face descriptors
- Rate-limited batch regeneration of the descriptor corpus
- FastAPI for RESTful API
"""

__version__ = "1.0.0"
