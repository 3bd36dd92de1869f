"""Local storage for a markdown note-taking app: notes in a directory tree, plus a debounced configuration file.

If you installed via ``pip``, run ``mded -h`` to get help.

To use the Python API, look at :class:`mded.api.Mded`
"""
