"""
Django admin configuration for core app.
"""
from django.contrib import admin


# Customize admin site header and title
admin.site.site_header = "Opsdesk Administration"
admin.site.site_title = "Opsdesk Admin"
admin.site.index_title = "Roles, permissions and audit trail"
