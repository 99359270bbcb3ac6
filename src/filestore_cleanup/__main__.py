from filestore_cleanup.cli import main

if __name__ == "__main__":
    main()
