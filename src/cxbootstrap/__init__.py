"""
cxbootstrap: sparse bootstrap of a local commerce platform installation.

Reads the project's manifest, resolves the dependency closure of its
extensions, extracts just those extensions from the distribution archives,
fetches the archives into a local cache and layers the development
configuration on top of the platform defaults.
"""
