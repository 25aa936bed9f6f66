"""Session lifecycle: path namespaces, link-record translation, the session
controller and container cleanup.

Import submodules directly; ``wtpod.git`` depends on ``wtpod.session.paths``.
"""
