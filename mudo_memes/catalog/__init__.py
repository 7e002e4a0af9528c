"""
Catalog package for the meme catalog API.

This package turns the remote meme table, the bundled fallback memes
and each device's like/save/hide overlay into one consistent
collection (``reconciler``), and exposes it over REST (``router``).
Import the router from ``mudo_memes.catalog.router``; importing it here
would create a cycle with the top-level ``models`` module.
"""
