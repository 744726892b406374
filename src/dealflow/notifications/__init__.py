"""Owner notifications and partner e-mail."""
