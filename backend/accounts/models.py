from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models


class UserManager(BaseUserManager):
    use_in_migrations = True

    def create_user(self, email, username=None, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email)
        if not username:
            # The email is already unique
            username = email[:150]
        user = self.model(email=email, username=username, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email=None, username=None, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        if not email:
            email = extra_fields.get('email', 'admin@chatify.local')
        return self.create_user(email, username, password, **extra_fields)


class User(AbstractUser):
    """
    Identity record. Sessions and tokens are issued outside this service;
    the real-time core only reads the id and the public profile fields.
    """
    email = models.EmailField(unique=True)
    # Object store URL, or a data: URL when no store is configured
    profile_pic = models.TextField(blank=True, default='')
    bio = models.CharField(max_length=500, blank=True, default='')
    last_seen = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.full_name} ({self.email})'

    @property
    def full_name(self):
        name = f'{self.first_name} {self.last_name}'.strip()
        return name or self.username
