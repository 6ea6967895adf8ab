import uvicorn

from veil.vars import HOST, PORT


def main():
    # server_header=False: the proxy must not announce its own stack
    uvicorn.run("veil.server:app", host=HOST, port=PORT, server_header=False)


if __name__ == "__main__":
    main()
