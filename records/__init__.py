"""Clinical records application.

Models, the approval workflow, notification fan-out and the live
dashboard layer (change feed subscribers and role-scoped views).
"""
