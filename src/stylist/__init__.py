"""AI stylist backend: streaming chat, try-on jobs, and moodboards."""
