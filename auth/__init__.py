"""auth/ -- Authentication and session package for CourseGate.

Layer rule: auth/ imports stdlib, third-party libraries, core/, and the
SessionCache / Mailer protocols from cache/ and mail/. It does NOT import from
api/. api/ imports from auth/, not the other way around. Concrete cache and
mailer instances are injected through constructors.
"""
