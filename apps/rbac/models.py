"""
RBAC models for multi-tenant access control.

Implements:
- User (the AUTH_USER_MODEL; belongs to exactly one company)
- Permission (table mirroring the in-code permission catalog)
- Role (global or company-scoped, globally unique name)
- RolePermission (maps permissions to roles)
- UserRoleAssignment (maps roles to users, with expiry)
- AuditLog (immutable, append-only audit trail)
"""
import logging
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from django.utils.crypto import salted_hmac
from apps.core.models import BaseModel
from apps.rbac.catalog import PermissionAction, list_actions, get_definition

logger = logging.getLogger(__name__)


class UserRole(models.TextChoices):
    """Primary role carried on the user row for convenience."""
    ADMIN = 'ADMIN', 'Administrator'
    OPERATIONS_MANAGER = 'OPERATIONS_MANAGER', 'Operations Manager'
    ACCOUNTANT = 'ACCOUNTANT', 'Accountant'
    HR = 'HR', 'HR'
    SUPERVISOR = 'SUPERVISOR', 'Supervisor'
    TECHNICIAN = 'TECHNICIAN', 'Technician'
    FACTORY_SUPERVISOR = 'FACTORY_SUPERVISOR', 'Factory Supervisor'
    SALES_REP = 'SALES_REP', 'Sales Representative'
    CLIENT = 'CLIENT', 'Client'


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create a platform superuser (used by ``createsuperuser``)."""
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', UserRole.ADMIN)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    def normalize_email(self, email):
        """Lowercase the domain part of the email address."""
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    User identity. Every user belongs to exactly one company.

    ``role`` is the primary role used by most call sites; the authoritative
    source of permissions is the set of ``UserRoleAssignment`` rows.
    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Display name, denormalised into audit entries"
    )
    company = models.ForeignKey(
        'tenants.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='users',
        db_index=True,
        help_text="Company this user belongs to (null for platform superusers)"
    )
    role = models.CharField(
        max_length=32,
        choices=UserRole.choices,
        default=UserRole.TECHNICIAN,
        db_index=True,
        help_text="Primary role"
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform administrator (Django admin access only)"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'role']),
            models.Index(fields=['is_active', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash; Django admin expects a 'password' field."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return name or email if name not set."""
        return self.name or self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        """Superusers get Django admin access."""
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        """
        Django admin permission hook.

        Application permissions are resolved by the RBAC engine, never
        through Django's permission framework.
        """
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)

    def get_session_auth_hash(self):
        """Session hash; changing the password logs out existing sessions."""
        return salted_hmac(
            'apps.rbac.models.User.get_session_auth_hash',
            self.password_hash,
            algorithm='sha256',
        ).hexdigest()


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def for_actions(self, actions):
        """Get permission rows for catalog actions."""
        return self.filter(code__in=[PermissionAction(action).value for action in actions])

    def sync_from_catalog(self):
        """
        Make the table mirror the catalog (idempotent).

        Returns:
            Tuple of (created, updated, removed) counts
        """
        created = updated = 0
        codes = []
        for action in list_actions():
            definition = get_definition(action)
            codes.append(action.value)
            _, was_created = self.update_or_create(
                code=action.value,
                defaults={
                    'label': definition.label,
                    'category': definition.category,
                    'resource': definition.resource,
                    'verb': definition.verb,
                }
            )
            if was_created:
                created += 1
            else:
                updated += 1

        removed, _ = self.exclude(code__in=codes).delete()
        return created, updated, removed


class Permission(BaseModel):
    """
    Permission definitions, one row per catalog action.

    Rows are synchronised from ``apps.rbac.catalog`` at deploy time and are
    never created from user input.
    """

    code = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        choices=PermissionAction.choices,
        help_text="Catalog action value (e.g., 'task.assign')"
    )
    label = models.CharField(
        max_length=255,
        help_text="Human-readable label (e.g., 'Assign tasks')"
    )
    description = models.TextField(
        blank=True,
        help_text="Detailed description of what this permission grants"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Display category (e.g., 'Tasks', 'Finance')"
    )
    resource = models.CharField(
        max_length=50,
        help_text="Resource part of the action (e.g., 'task')"
    )
    verb = models.CharField(
        max_length=50,
        help_text="Verb part of the action (e.g., 'assign')"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'code']

    def __str__(self):
        return f"{self.code} - {self.label}"

    @property
    def action(self):
        return PermissionAction(self.code)


class RoleManager(models.Manager):
    """Manager for Role queries with company scoping."""

    def visible_to(self, company_id):
        """Global roles plus the roles of one company."""
        return self.filter(Q(company__isnull=True) | Q(company_id=company_id))

    def system_roles(self):
        return self.filter(is_system=True)


class Role(BaseModel):
    """
    A named set of permissions.

    Roles with no company are global and visible to every company. System
    roles are provisioned by ``seed_roles`` and can be neither renamed nor
    deleted.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name, unique across all companies (e.g., 'supervisor')"
    )
    display_name = models.CharField(
        max_length=255,
        help_text="Human-readable name (e.g., 'Supervisor')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a provisioned system role"
    )
    company = models.ForeignKey(
        'tenants.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
        db_index=True,
        help_text="Owning company (null = global role)"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']
        indexes = [
            models.Index(fields=['company', 'is_system']),
        ]

    def __str__(self):
        return self.name

    def get_permission_actions(self):
        """Return the actions this role grants."""
        codes = self.role_permissions.values_list('permission__code', flat=True)
        return frozenset(PermissionAction(code) for code in codes)

    def holder_ids(self):
        """Ids of users with an assignment of this role."""
        return list(
            self.user_assignments.values_list('user_id', flat=True).distinct()
        )


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)


class RolePermission(BaseModel):
    """Maps permissions to roles."""

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        db_index=True,
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        db_index=True,
        help_text="Permission being granted"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.code}"


class UserRoleAssignmentManager(models.Manager):
    """Manager for UserRoleAssignment queries."""

    def effective(self, now=None):
        """Assignments that currently grant permissions (active, unexpired)."""
        now = now or timezone.now()
        return self.filter(is_active=True).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def holder_ids(self, role_id):
        """Ids of users holding a role."""
        return list(
            self.filter(role_id=role_id).values_list('user_id', flat=True).distinct()
        )


class UserRoleAssignment(BaseModel):
    """
    Maps roles to users.

    A user can hold several roles; their permissions are unioned. Inactive
    or expired assignments grant nothing.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='role_assignments',
        db_index=True,
        help_text="User who holds this role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_assignments',
        db_index=True,
        help_text="Role assigned to the user"
    )
    is_default = models.BooleanField(
        default=False,
        help_text="Role assigned at account creation"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive assignments grant nothing"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Assignment stops granting permissions after this time"
    )

    # Audit fields
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )
    assigned_at = models.DateTimeField(
        default=timezone.now,
        help_text="When role was assigned"
    )

    objects = UserRoleAssignmentManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['user', 'role']
        indexes = [
            models.Index(fields=['user', 'is_active']),
        ]

    def __str__(self):
        return f"{self.user.email} -> {self.role.name}"

    def is_effective(self, now=None):
        now = now or timezone.now()
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries with company scoping."""

    def for_company(self, company_id):
        """Get audit logs for a specific company."""
        return self.filter(company_id=company_id)


class AuditLog(models.Model):
    """
    Immutable audit trail of authorization decisions and privileged mutations.

    The acting user's name and role are copied at write time since roles
    change. ``created_at`` is supplied by the writer so that entries written
    asynchronously keep the time the event happened. Rows are never updated
    or deleted through the model; retention is an operational concern.
    """

    company = models.ForeignKey(
        'tenants.Company',
        on_delete=models.PROTECT,
        related_name='audit_logs',
        db_index=True,
        help_text="Company this entry belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="User who performed the action (null for system actions)"
    )
    user_name = models.CharField(max_length=255, blank=True, null=True)
    user_role = models.CharField(max_length=32, blank=True, null=True)

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'task.assigned', 'access.denied')"
    )
    resource = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Resource category (e.g., 'task', 'role')"
    )
    resource_id = models.BigIntegerField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of the affected resource"
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form details payload"
    )

    # Request Context
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, null=True)
    request_id = models.CharField(
        max_length=64,
        blank=True,
        null=True,
        db_index=True,
        help_text="Request ID for tracing"
    )

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['company', 'created_at']),
            models.Index(fields=['company', 'action', 'created_at']),
            models.Index(fields=['resource', 'resource_id']),
        ]

    def __str__(self):
        return f"{self.company_id} - {self.user_name or 'System'} - {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit log entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit log entries cannot be deleted")
