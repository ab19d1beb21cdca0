"""Configuration, logging and error types shared by DevShop services."""
