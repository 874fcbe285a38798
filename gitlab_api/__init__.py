"""gitlab_api/ -- REST client for the GitLab instance that owns users, groups and tokens.

Layer rule: gitlab_api/ imports only stdlib + third-party libraries.
It does NOT import from api/ or auth/. auth/ imports from gitlab_api/.
"""
