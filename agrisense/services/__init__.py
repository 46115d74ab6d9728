"""
Service layer.

- vision / providers: image analysis through a multimodal AI provider
- database: managed database and auth pass-through
- forum, profiles, history: row-level features built on `database`
- weather: current conditions and farming tips
"""
