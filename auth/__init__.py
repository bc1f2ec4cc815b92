"""auth/ -- Authentication and authorization package for Taskboard.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and the
read side of tracker/ (relation lookups for the policy engine).
api/ imports from auth/, not the other way around.
"""
