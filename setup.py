from setuptools import setup, find_namespace_packages

setup(
    name="sql-to-mongo",
    version="0.1",
    packages=find_namespace_packages(include=["sqltomongo", "sqltomongo.*"]),
    install_requires=[
        "loguru",
        "sqlalchemy>=1.4",
        "pymysql",
        "psycopg2-binary",
        "pyodbc",
        "pymongo",
    ],
)
