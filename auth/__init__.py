"""auth/ -- Account authentication package for the MLReef auth service.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and
gitlab_api/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
