"""
Billing app: plans, subscriptions, coupons, payment gateways, invoices and
NFS-e emission for clinics on the platform.
"""
