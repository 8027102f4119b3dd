"""
Django settings for config project.
"""
import os
from decimal import Decimal
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# ==========================================
# 1. CORE SETTINGS
# ==========================================

# Lee la secret key del entorno, o usa una insegura solo si no existe (para dev)
SECRET_KEY = os.environ.get('SECRET_KEY', 'django-insecure-dev-key-change-in-prod')

# DEBUG debe ser True solo si la variable es 'True'
DEBUG = os.environ.get('DEBUG', 'True') == 'True'

# Hosts permitidos separados por coma
ALLOWED_HOSTS = os.environ.get('ALLOWED_HOSTS', 'localhost,127.0.0.1,0.0.0.0').split(',')


# ==========================================
# 2. INSTALLED APPS
# ==========================================
INSTALLED_APPS = [
    "unfold",  # Admin moderno
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django.contrib.humanize",

    # Local Apps (Módulos)
    "users",
    "inventory",
    "sales",
    "finance",
    "notifications",
]

# Modelo de Usuario Personalizado
AUTH_USER_MODEL = 'users.User'


# ==========================================
# 3. MIDDLEWARE
# ==========================================
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    "whitenoise.middleware.WhiteNoiseMiddleware",
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'


# ==========================================
# 4. DATABASE (PostgreSQL)
# ==========================================

# Tiempo máximo por consulta durante la confirmación de ventas. Una llamada
# colgada se corta en el servidor y llega al motor como UpstreamUnavailable.
SALE_CONFIRMATION_TIMEOUT_SECONDS = int(os.environ.get('SALE_CONFIRMATION_TIMEOUT_SECONDS', '15'))

if os.environ.get('POSTGRES_DB'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('POSTGRES_DB'),
            'USER': os.environ.get('POSTGRES_USER', 'admin'),
            'PASSWORD': os.environ.get('POSTGRES_PASSWORD', 'admin'),
            'HOST': os.environ.get('DB_HOST', 'db'),
            'PORT': os.environ.get('DB_PORT', '5432'),
            'OPTIONS': {
                'options': f"-c statement_timeout={SALE_CONFIRMATION_TIMEOUT_SECONDS * 1000}",
            },
        }
    }
else:
    # Desarrollo local y tests
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }


# ==========================================
# 5. PASSWORD VALIDATION
# ==========================================
AUTH_PASSWORD_VALIDATORS = [
    { 'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator', },
    { 'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator', },
    { 'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator', },
    { 'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator', },
]


# ==========================================
# 6. LOCALIZATION
# ==========================================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Africa/Tunis'
USE_I18N = True
USE_TZ = True


# ==========================================
# 7. STATIC FILES (Whitenoise)
# ==========================================

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    # Archivos Estáticos (CSS, JS) -> Whitenoise (Local rápido)
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage",
    },
}

# ==========================================
# 8. UNFOLD ADMIN UI (Personalización)
# ==========================================
UNFOLD = {
    "SITE_TITLE": "Land Sales",
    "SITE_HEADER": "Back office",
    "SITE_URL": "/",
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# ==========================================
# 9. VENTAS / CONFIRMACIÓN
# ==========================================

# Tolerancia para considerar una promesa de venta como totalmente pagada
SALES_PAYMENT_EPSILON = Decimal("0.01")

# Token para la API JSON de confirmación (vacío = sin verificación)
SALES_API_TOKEN = os.environ.get("SALES_API_TOKEN", "")


# ==========================================
# 10. LOGGING
# ==========================================
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        app_logger: {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        }
        for app_logger in ("core", "sales", "inventory", "finance", "notifications")
    },
}
