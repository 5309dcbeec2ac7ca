import uuid

from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models


class Clinic(models.Model):
    """A clinic registered on the platform. Every billing record belongs to one."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    cnpj = models.CharField(max_length=18, unique=True, help_text='Brazilian company tax id')
    email = models.EmailField()
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'clinics'
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def billing_contacts(self):
        """Active owners and admins, the people who receive billing emails."""
        return self.users.filter(
            is_active=True,
            role__in=[User.ROLE_OWNER, User.ROLE_ADMIN],
        )


class UserManager(BaseUserManager):
    """Custom user manager for UUID primary keys"""
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('The Email field must be set')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('platform_role', User.PLATFORM_SUPER_ADMIN)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """Clinic staff member or platform operator, identified by email."""
    ROLE_OWNER = 'OWNER'
    ROLE_ADMIN = 'ADMIN'
    ROLE_STAFF = 'STAFF'
    ROLE_CHOICES = [
        (ROLE_OWNER, 'Clinic Owner'),
        (ROLE_ADMIN, 'Clinic Admin'),
        (ROLE_STAFF, 'Staff'),
    ]
    PLATFORM_SUPER_ADMIN = 'SUPER_ADMIN'
    PLATFORM_SAAS_ADMIN = 'SAAS_ADMIN'
    PLATFORM_SAAS_STAFF = 'SAAS_STAFF'
    PLATFORM_NONE = 'NONE'
    PLATFORM_ROLE_CHOICES = [
        (PLATFORM_NONE, 'None'),
        (PLATFORM_SUPER_ADMIN, 'Super Admin'),
        (PLATFORM_SAAS_ADMIN, 'SaaS Admin'),
        (PLATFORM_SAAS_STAFF, 'SaaS Staff'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    clinic = models.ForeignKey(Clinic, on_delete=models.SET_NULL, null=True, blank=True, related_name='users')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_STAFF)
    platform_role = models.CharField(max_length=20, choices=PLATFORM_ROLE_CHOICES, default=PLATFORM_NONE)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    class Meta:
        db_table = 'users'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.email})"

    def has_platform_role(self, *roles):
        if not self.platform_role:
            return False
        return self.platform_role in roles

    @property
    def is_platform_super_admin(self):
        return self.has_platform_role(self.PLATFORM_SUPER_ADMIN) or self.is_superuser

    @property
    def is_platform_admin(self):
        return self.has_platform_role(self.PLATFORM_SUPER_ADMIN, self.PLATFORM_SAAS_ADMIN)

    @property
    def is_clinic_admin(self):
        return self.clinic_id is not None and self.role in (self.ROLE_OWNER, self.ROLE_ADMIN)
