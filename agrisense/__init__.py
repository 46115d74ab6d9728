"""AgriSense farming assistant backend."""
